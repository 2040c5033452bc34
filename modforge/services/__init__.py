"""Side-effecting adapters behind the pipeline.

Services implement the step handlers and lookups, coordinating between the
pipeline and infrastructure (pwsh, dotnet, gh, the filesystem).
"""
