from django.apps import AppConfig
from django.core.signals import setting_changed


class LinkgraphConfig(AppConfig):
    """Configuration for the linkgraph Django app."""

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'linkgraph'
    verbose_name = 'Internal link graph'

    def ready(self) -> None:
        from .services import reset_engine_config

        setting_changed.connect(reset_engine_config, dispatch_uid='linkgraph.reset_engine_config')
