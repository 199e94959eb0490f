"""
GuildKit - Modular Discord bot runtime

Usage:
    python bot.py

Configuration is read from config/default.yaml, config/<environment>.yaml,
a .env file and the environment. Environment variables:
    GUILDKIT_TOKEN - Discord bot token (required)
    GUILDKIT_PREFIX - Command prefix (default: !)
    GUILDKIT_ENVIRONMENT - development, staging, production or testing
    GUILDKIT_DATA_STORE - memory, sqlite or couchdb (default: memory)
    GUILDKIT_MODULE_PATH - Directory modules are loaded from (default: bot_modules)
    GUILDKIT_LOG_LEVEL - Logging level (default: INFO)
"""

import logging
import sys

from core import ConfigurationError

# Set up basic logging first
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger('guildkit')

def main():
    """Main entry point for GuildKit"""
    try:
        logger.info("Starting GuildKit...")

        from services.bot_application import create_application

        app = create_application()
        app.run_sync()

    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)
    except ImportError as e:
        logger.error(f"Failed to import required modules: {e}")
        logger.error("Make sure all dependencies are installed:")
        logger.error("  pip install -e .")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Application failed to start: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
