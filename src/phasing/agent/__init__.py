"""In-cluster agent installation."""
