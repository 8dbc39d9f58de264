from pydantic import BaseModel, Field


# Required fields are optional at the schema level; presence and emptiness
# are checked in the service layer, which raises ValidationError.

# --- User ---

class UserCreate(BaseModel):
    email: str | None = Field(None, max_length=255)
    name: str | None = Field(None, max_length=150)


# --- Post ---

class PostCreate(BaseModel):
    title: str | None = Field(None, max_length=300)
    content: str | None = None
    author_id: str | None = None
    published: bool = False


# --- Comment ---

class CommentCreate(BaseModel):
    content: str | None = None
    post_id: str | None = None
    author_id: str | None = None
