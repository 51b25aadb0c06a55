"""Pipeline de ingesta.

- ingestion: orquestación validate -> primary -> sinks secundarios -> fan-out
- sink_runner: timeouts + circuit breaker por sink
- hooks: extensiones on_persisted / on_accepted
"""
