"""Rule database, data model, line indexing and risk scoring."""
