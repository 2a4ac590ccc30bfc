"""Courses context: course catalogue, ownership and enrollments."""
