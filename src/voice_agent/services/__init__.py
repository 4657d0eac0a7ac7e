"""External integrations: Stream Video, LLM, ElevenLabs TTS, Cloudinary, Inngest."""
