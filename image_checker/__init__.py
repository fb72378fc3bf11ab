"""Session persistence and concurrency control for the device image checker"""
