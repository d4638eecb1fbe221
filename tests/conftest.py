"""Pytest configuration shared across test modules."""

import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "tippingover_site.settings")
os.environ.setdefault("DJANGO_SECRET_KEY", "test-secret")
os.environ.setdefault("DJANGO_DEBUG", "true")
os.environ.setdefault("TIPPINGOVER_CONFIG", "")

import django  # noqa: E402

django.setup()
