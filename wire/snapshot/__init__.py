"""On-disk snapshot store, its sinks and metadata, and the legacy-format upgrader."""