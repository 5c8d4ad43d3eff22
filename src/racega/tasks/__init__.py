"""Progress tracking, safety monitoring and reward shaping."""
