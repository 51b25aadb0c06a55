"""Jobs de mantenimiento ejecutables por CLI."""
