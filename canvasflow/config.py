"""Application configuration. All env vars defined here with defaults."""

from pydantic_settings import BaseSettings


class CanvasflowConfig(BaseSettings):
    # ── App ──
    app_name: str = "canvasflow"
    debug: bool = False
    log_level: str = "INFO"

    # ── Orchestrator ──
    max_node_executions: int = 10_000          # hard ceiling per run, loop iterations included
    loop_mode: str = "each"                    # "each" re-runs the body per item, "first" runs it once
    max_loop_items: int = 1_000
    simulated_node_delay_ms: int = 0           # editor-style processing delay between nodes

    # ── HTTP Request node ──
    http_timeout_seconds: float = 30.0
    http_verify_ssl: bool = True
    http_response_size_limit_kb: int = 10240
    http_user_agent: str = "canvasflow/0.1"

    # ── EmailJS node ──
    emailjs_api_url: str = "https://api.emailjs.com/api/v1.0/email/send"
    emailjs_max_payload_bytes: int = 50_000

    model_config = {"env_prefix": "CANVASFLOW_", "env_file": ".env", "extra": "ignore"}


config = CanvasflowConfig()
