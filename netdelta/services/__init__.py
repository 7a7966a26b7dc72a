"""
Services: dispatch queue, scan scheduler, diff engine, snapshot storage,
scan executors and the network monitor.
"""
