from promptweave.backends.base import GenerationBackend, ScriptedBackend
from promptweave.backends.providers import ProviderBackend
