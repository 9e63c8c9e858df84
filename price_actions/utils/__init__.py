"""Utils module for the Price Actions engine."""
