"""utilities: logging, run correlation, shutdown handling, validation, report formats"""
