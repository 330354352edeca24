"""Core building blocks: config, files, scratch resources, settings, datastore."""
