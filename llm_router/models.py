from __future__ import annotations
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["system", "user", "assistant", "tool"]


class LLMModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""
    tokenLimit: int = 4096
    enabled: bool = True
    default: Optional[bool] = None
    temperature: Optional[float] = None
    parameterSize: Optional[str] = None


class ImageUrl(BaseModel):
    url: str


class ContentPart(BaseModel):
    type: Literal["text", "image_url", "tool_image_url"]
    text: Optional[str] = None
    image_url: Optional[ImageUrl] = None


class Context(BaseModel):
    """Retrieved document snippet supplied by the retrieval service."""

    model_config = ConfigDict(extra="allow")

    id: Optional[Union[str, int]] = None
    readable_filename: str = ""
    pagenumber: Optional[Union[str, int]] = None
    timestamp: Optional[str] = None
    url: Optional[str] = None
    s3_path: Optional[str] = None
    text: str = ""


class ToolOutput(BaseModel):
    text: Optional[str] = None
    imageUrls: Optional[List[str]] = None
    data: Optional[Any] = None


class ToolInvocation(BaseModel):
    model_config = ConfigDict(extra="allow")

    readableName: str
    output: Optional[ToolOutput] = None
    error: Optional[str] = None


class Message(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    role: Role
    content: Union[str, List[ContentPart]] = ""
    contexts: Optional[List[Context]] = None
    tools: Optional[List[ToolInvocation]] = None
    latestSystemMessage: Optional[str] = None
    finalPromtEngineeredMessage: Optional[str] = None


class LinkParameters(BaseModel):
    guidedLearning: bool = False
    documentsOnly: bool = False
    systemPromptOnly: bool = False


class Conversation(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""
    messages: List[Message] = Field(default_factory=list)
    model: LLMModel
    prompt: str = ""
    temperature: float = 0.7
    userEmail: Optional[str] = None
    projectName: Optional[str] = None
    linkParameters: Optional[LinkParameters] = None


# ---------------- provider configuration (one variant per backend) -----------------

class OpenAIProviderConfig(BaseModel):
    provider: Literal["OpenAI"] = "OpenAI"
    apiKey: Optional[str] = None
    baseUrl: Optional[str] = None


class BedrockProviderConfig(BaseModel):
    provider: Literal["Bedrock"] = "Bedrock"
    accessKeyId: Optional[str] = None
    secretAccessKey: Optional[str] = None
    region: Optional[str] = None


class GeminiProviderConfig(BaseModel):
    provider: Literal["Gemini"] = "Gemini"
    apiKey: Optional[str] = None


class OllamaProviderConfig(BaseModel):
    provider: Literal["Ollama"] = "Ollama"
    baseUrl: Optional[str] = None


class VLLMProviderConfig(BaseModel):
    provider: Literal["VLLM"] = "VLLM"
    baseUrl: Optional[str] = None


ProviderConfig = Annotated[
    Union[
        OpenAIProviderConfig,
        BedrockProviderConfig,
        GeminiProviderConfig,
        OllamaProviderConfig,
        VLLMProviderConfig,
    ],
    Field(discriminator="provider"),
]


class ProjectSettings(BaseModel):
    """Project-level (course) settings that shape the prompt and provider choice."""

    model_config = ConfigDict(extra="allow")

    system_prompt: Optional[str] = None
    documentsOnly: bool = False
    guidedLearning: bool = False
    systemPromptOnly: bool = False
    defaultProvider: Optional[str] = None
    llmProviders: Dict[str, ProviderConfig] = Field(default_factory=dict)


# ---------------- HTTP bodies -----------------

class ChatRequest(BaseModel):
    conversation: Conversation
    provider: Optional[str] = None
    providerConfig: Optional[ProviderConfig] = None
    stream: bool = True
    projectName: Optional[str] = None
    courseMetadata: Optional[ProjectSettings] = None


class BuildPromptRequest(BaseModel):
    conversation: Conversation
    projectName: str = ""
    courseMetadata: Optional[ProjectSettings] = None


class BuildPromptResponse(Conversation):
    citations: Dict[int, Context] = Field(default_factory=dict)


class ModelsResponse(BaseModel):
    provider: str
    models: List[LLMModel]


class ErrorBody(BaseModel):
    error: str
    code: int


class Health(BaseModel):
    status: str


class VersionInfo(BaseModel):
    version: str
    default_provider: Optional[str] = None
    providers: Dict[str, bool]
