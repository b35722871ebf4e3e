"""Pipeline: scraping, orchestration and the command-line entry point."""
