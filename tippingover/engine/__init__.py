"""Tooltip resolution engine: early/late stages, category filtering and client negotiation."""
