"""HTTP API layer: routes, schemas, middleware, and SSE rendering."""
