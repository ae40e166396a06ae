"""Intermediate representation of journeys: locators, values and primitives."""
