"""HTTP clients for SPARQL endpoints and the search index."""
