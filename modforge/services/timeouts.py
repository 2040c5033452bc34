from __future__ import annotations

# Module metadata / registry queries through pwsh
LOOKUP_TIMEOUT_SECONDS = 2 * 60.0

# Binary component build (dotnet publish)
BUILD_TIMEOUT_SECONDS = 20 * 60.0

# Help extraction and markdown/MAML generation
DOCS_TIMEOUT_SECONDS = 10 * 60.0

# Formatter and signing runs over the staged tree
FORMAT_TIMEOUT_SECONDS = 10 * 60.0
SIGN_TIMEOUT_SECONDS = 10 * 60.0

# Test suites
TESTS_TIMEOUT_SECONDS = 30 * 60.0

# Publishing (network bound)
PUBLISH_TIMEOUT_SECONDS = 10 * 60.0

# Idempotent publish read retry policy (gh release view)
GH_READ_RETRY_ATTEMPTS = 3
GH_READ_RETRY_DELAY_SECONDS = 1.0
