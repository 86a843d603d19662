"""Collection, compression and transmission of completion telemetry."""