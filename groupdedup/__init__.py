"""Find duplicate directory groups and delete the ones a reviewer approved."""

__version__ = "1.0.0"
