"""Restaurant POS order, ticket and billing backend."""
