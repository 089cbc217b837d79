"""
API blueprints for the loyalty engine.
"""
