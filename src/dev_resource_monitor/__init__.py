"""Local process and CPU resource monitor with categorized history."""
