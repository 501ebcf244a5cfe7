#!/usr/bin/env python3
"""
Retail Banking System Entry Point

Starts the FastAPI server with host, port and log level from configuration.
"""

import sys

from retail_banking.api import run_server
from retail_banking.config import get_config
from retail_banking.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, config.logger_name)

    print("🏦 Starting Retail Banking System...")
    print(f"💾 Storage backend: {config.storage_backend}")
    print("🔒 Audit trail active" if config.enable_audit_logging else "🔓 Audit trail disabled")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        print("\n👋 Shutting down Retail Banking System...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
