"""Transaction and scoping helpers shared by the workflow services."""
