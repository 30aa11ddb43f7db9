"""Task pipeline core: task descriptions, the sequential runner and results.

A task targets one vocabulary version and lists subtasks executed in order
by kind-specific providers. Persistence lives in ``vocab_toolkit.storage``;
the service in ``tasks.service`` ties the runner to the task store.
"""
