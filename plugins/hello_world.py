"""Example Hello World plugin.

Simple user plugin that publishes a greeting headline on a schedule.
Demonstrates basic plugin structure; copy it into ``~/.topix/plugins/``
and enable it in the config file:

    plugins:
      hello_world:
        enabled: true
        schedule: "0 * * * *"
        config:
          message: Hello from Topix!
"""

import logging
from typing import Any, Dict, List

from topix.server.plugins.base import BasePlugin, FetchContext
from topix.server.plugins.types import Headline, PluginDescriptor, RetentionPolicy

logger = logging.getLogger(__name__)


class HelloWorldPlugin(BasePlugin):
    """Example plugin that publishes a hello message.

    Uses the fetch history to number its greetings.
    """

    descriptor = PluginDescriptor(
        id="hello_world",
        name="Hello World",
        version="1.0.0",
        author="Topix",
        description="Example plugin that publishes hello messages",
    )

    def describe_config_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "message": {
                    "type": "string",
                    "description": "Greeting to publish",
                    "default": "Hello, World!",
                },
            },
            "required": [],
        }

    def retention_policy(self) -> RetentionPolicy:
        return RetentionPolicy.count(10)

    async def fetch(self, context: FetchContext) -> List[Headline]:
        """Publish one greeting."""
        previous = context.get_history(limit=1)
        number = previous[0].metadata.get("number", 0) + 1 if previous else 1
        message = self.config_value("message")
        logger.info(f"HelloWorldPlugin: {message} (#{number})")
        return [
            Headline.create(
                self.descriptor.id,
                message,
                category="example",
                tags=["hello"],
                metadata={"number": number},
            )
        ]
