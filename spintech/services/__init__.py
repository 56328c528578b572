# Service layer for SpinTech Control
# - data_parser:      telemetry decoding, command encoding, range validation
# - device_client:    HTTP client for the ESP32 API, connection tracking, polling
# - valve_controller: direct/stepped valve actuation with safety gates
# - view_model:       mirrors client/controller events into bindable state
