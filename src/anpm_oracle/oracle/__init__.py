"""Oracle node: pool task protocol and the poll/infer/submit loop."""
