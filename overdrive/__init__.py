"""
hyprsunset-overdrive

Background daemon that turns hyprsunset's blue-light filter on after sunset
and off after sunrise for a configured location, with a manual override that
lapses at local midnight.

Modules:
    brain.py      - sunrise/sunset (astral) and the filter-state resolver
    primitives.py - manual override state machine
    main.py       - control loop and process entry point
    driver.py     - hyprsunset socket driver
    config.py     - TOML configuration with voluptuous validation
    webserver.py  - local aiohttp control endpoint for override events
"""

__version__ = "0.3.0"
