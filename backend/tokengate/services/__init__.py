"""Business services for tokengate."""
