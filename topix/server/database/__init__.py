"""Embedded relational store: engine/session setup, models and migrations."""
