from django.apps import AppConfig


class TippingOverConfig(AppConfig):
    """Configuration for the tippingover Django app."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'tippingover'
    verbose_name = 'TippingOver tooltips'
