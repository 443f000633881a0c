"""
Pydantic schemas for request/response validation
"""

from pydantic import BaseModel, Field
from typing import Optional


class AuthRequest(BaseModel):
    """Request model for password login"""
    password: str = Field(..., max_length=256, description="Shared household password")

    class Config:
        json_schema_extra = {
            "example": {
                "password": "correct horse battery staple"
            }
        }


class AuthResponse(BaseModel):
    """Response model for a successful login"""
    success: bool = Field(True, description="Always true on 200")
    token: str = Field(..., description="Session token for X-Session-Token or ?token=")


class ConvertRequest(BaseModel):
    """Request model for YouTube to MP3 conversion."""
    url: Optional[str] = Field(None, max_length=512, description="YouTube URL or 11-character video ID")
    quality: Optional[str] = Field(None, max_length=8, description="MP3 bitrate in kbps (64-320)")

    class Config:
        json_schema_extra = {
            "example": {
                "url": "https://youtu.be/dQw4w9WgXcQ",
                "quality": "192"
            }
        }


class VideoInfoResponse(BaseModel):
    """Response model for video metadata lookups"""
    title: str
    author: Optional[str] = None
    duration: Optional[int] = Field(None, description="Duration in seconds")
    thumbnail: Optional[str] = None


class HealthResponse(BaseModel):
    """Liveness probe response"""
    status: str = "ok"
    timestamp: str


class ErrorResponse(BaseModel):
    """Body of every error response"""
    error: str
