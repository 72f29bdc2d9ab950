"""Domain services: chunking, retrieval, enrichment, synthesis, chat."""
