"""Code Mode: natural-language requests turned into reviewed, sandboxed discord.py code."""
