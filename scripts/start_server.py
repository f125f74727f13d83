#!/usr/bin/env python3
"""
Run the API with uvicorn using HOST/PORT from the environment.

Usage:
    python scripts/start_server.py
"""
import os
import sys

import uvicorn
from dotenv import load_dotenv


def main():
    load_dotenv()

    host = os.getenv('HOST', '0.0.0.0')
    port = os.getenv('PORT', '8000')
    reload = os.getenv('ENVIRONMENT', 'development') == 'development'

    if not os.path.exists("app"):
        print("'app' directory not found! Run this from the project root.")
        sys.exit(1)

    print(f"Server will be available at: http://localhost:{port}")
    print(f"API docs will be available at: http://localhost:{port}/docs")
    if os.getenv('PERSISTENCE_BACKEND', 'dynamodb') == 'dynamodb':
        print("Make sure the tables exist: python scripts/init_dynamodb.py")

    uvicorn.run("app.main:app", host=host, port=int(port), reload=reload)


if __name__ == "__main__":
    main()
