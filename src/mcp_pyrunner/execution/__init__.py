"""Bounded subprocess execution of submitted code."""
