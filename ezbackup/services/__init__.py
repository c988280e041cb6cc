"""Services built on top of the job registry."""
