"""
Configuration models for the voicedesk media service.

Pydantic v2 models provide validation and defaults for every option the
service recognizes. Credentials are never read from YAML; see security.py.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class ServerConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    media_path: str = Field(default="/ws-media")


class DeepgramProviderConfig(BaseModel):
    api_key: Optional[str] = None
    base_url: str = Field(default="wss://api.deepgram.com")
    model: str = Field(default="nova-2")
    language: str = Field(default="es")
    # Inbound media is forwarded verbatim, so this must match the call leg codec
    encoding: str = Field(default="mulaw")
    sample_rate_hz: int = Field(default=8000)
    interim_results: bool = Field(default=True)
    endpointing_ms: int = Field(default=300)
    utterance_end_ms: int = Field(default=1000)
    smart_format: bool = Field(default=True)
    connect_timeout_sec: float = Field(default=5.0)


class OpenAIProviderConfig(BaseModel):
    api_key: Optional[str] = None
    organization: Optional[str] = None
    chat_base_url: str = Field(default="https://api.openai.com/v1")
    chat_model: str = Field(default="gpt-4o-mini")
    temperature: float = Field(default=0.3)
    max_tokens: int = Field(default=200)
    response_timeout_sec: float = Field(default=8.0)


class ElevenLabsProviderConfig(BaseModel):
    api_key: Optional[str] = None
    base_url: str = Field(default="https://api.elevenlabs.io/v1")
    voice_id: str = Field(default="21m00Tcm4TlvDq8ikWAM")
    model_id: str = Field(default="eleven_multilingual_v2")
    output_format: str = Field(default="mp3_44100_128")
    stability: float = Field(default=0.5)
    similarity_boost: float = Field(default=0.75)
    # Anything shorter is treated as a failed synthesis
    min_audio_bytes: int = Field(default=64)
    response_timeout_sec: float = Field(default=10.0)


class ProvidersConfig(BaseModel):
    deepgram: DeepgramProviderConfig = Field(default_factory=DeepgramProviderConfig)
    openai: OpenAIProviderConfig = Field(default_factory=OpenAIProviderConfig)
    elevenlabs: ElevenLabsProviderConfig = Field(default_factory=ElevenLabsProviderConfig)


class PlaybackConfig(BaseModel):
    """Outbound framing for the call leg (reference: 8 kHz mono μ-law, 20 ms)."""
    codec: str = Field(default="mulaw")
    sample_rate_hz: int = Field(default=8000)
    channels: int = Field(default=1)
    bytes_per_sample: int = Field(default=1)
    frame_duration_ms: int = Field(default=20)

    @property
    def frame_bytes(self) -> int:
        return int(self.sample_rate_hz * (self.frame_duration_ms / 1000.0) * self.bytes_per_sample * self.channels)


class TranscoderConfig(BaseModel):
    ffmpeg_path: str = Field(default="ffmpeg")
    timeout_sec: float = Field(default=10.0)


class TurnConfig(BaseModel):
    silence_threshold_ms: int = Field(default=700)


class TimeoutsConfig(BaseModel):
    """Upper bounds for each suspending call made during a turn."""
    responder_sec: float = Field(default=8.0)
    classifier_sec: float = Field(default=8.0)
    synthesizer_sec: float = Field(default=10.0)
    transcoder_sec: float = Field(default=10.0)
    recognizer_connect_sec: float = Field(default=5.0)


class TicketSinkConfig(BaseModel):
    url: Optional[str] = None
    timeout_sec: float = Field(default=8.0)


class DialogueConfig(BaseModel):
    flow: str = Field(default="identify_reason")  # identify_reason | reason_only
    greeting: str = Field(default="Hola, gracias por llamar a la mesa de ayuda.")
    identify_prompt: str = Field(default="¿Me podría decir su nombre o su número de empleado?")
    identify_reprompt: str = Field(default="Disculpe, no le entendí. ¿Me repite su nombre, por favor?")
    identify_ack: str = Field(default="Gracias, {name}.")
    reason_prompt: str = Field(default="¿Cuál es el motivo de su llamada?")
    reason_reprompt: str = Field(
        default="Disculpe, ¿me podría explicar con un poco más de detalle el motivo de su llamada?"
    )
    closing_fallback: str = Field(
        default="Gracias, he registrado su solicitud. Un compañero se pondrá en contacto con usted pronto."
    )
    farewell: str = Field(default="Gracias por llamar. ¡Que tenga un buen día!")
    responder_prompt: str = Field(
        default=(
            "Eres el asistente telefónico de la mesa de ayuda de una empresa. "
            "La persona que llama ya explicó el motivo de su llamada. "
            "Responde en español, en una o dos frases cortas, confirmando que su solicitud "
            "quedó registrada y que un compañero le contactará. No hagas más preguntas."
        )
    )
    classifier_prompt: str = Field(
        default=(
            "Clasifica la solicitud de la persona que llama. Responde únicamente con un objeto JSON "
            "con las claves \"category\" y \"urgency\". "
            "Valores permitidos para category: {categories}. "
            "Valores permitidos para urgency: {urgencies}."
        )
    )
    categories: List[str] = Field(
        default_factory=lambda: ["portal_access", "it_support", "payroll", "benefits", "schedule", "other"]
    )
    urgencies: List[str] = Field(default_factory=lambda: ["low", "medium", "high"])
    default_category: str = Field(default="other")
    default_urgency: str = Field(default="medium")

    @model_validator(mode="after")
    def _check_vocabulary(self):
        if self.flow not in ("identify_reason", "reason_only"):
            raise ValueError(f"Unsupported dialogue flow: {self.flow}")
        if self.default_category not in self.categories:
            raise ValueError(f"default_category '{self.default_category}' is not in categories")
        if self.default_urgency not in self.urgencies:
            raise ValueError(f"default_urgency '{self.default_urgency}' is not in urgencies")
        return self


class LoggingConfig(BaseModel):
    level: str = Field(default="info")  # debug|info|warning|error|critical


class AppConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    playback: PlaybackConfig = Field(default_factory=PlaybackConfig)
    transcoder: TranscoderConfig = Field(default_factory=TranscoderConfig)
    turn: TurnConfig = Field(default_factory=TurnConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    ticket: TicketSinkConfig = Field(default_factory=TicketSinkConfig)
    dialogue: DialogueConfig = Field(default_factory=DialogueConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
