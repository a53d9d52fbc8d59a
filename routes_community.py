import logging
from typing import Optional, List, Dict, Any

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError
from pymongo import ReturnDocument

from database import db, create_document, serialize, to_object_id, utcnow
from schemas import Community, CommunityPost, Comment
from security import Principal, get_current_user, get_optional_user
from validation import sanitize_input

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/community", tags=["community"])

DEFAULT_AVATAR = "\U0001F464"


class CommunityRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    isPublic: bool = True
    tags: List[str] = []


class PostRequest(BaseModel):
    content: Optional[str] = None
    tags: List[str] = []


class CommentRequest(BaseModel):
    text: Optional[str] = None


def _authors(user_ids) -> Dict[str, Dict[str, Any]]:
    oids = [ObjectId(u) for u in set(user_ids) if ObjectId.is_valid(u)]
    if not oids:
        return {}
    return {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": oids}}, {"name": 1, "avatar": 1})}


def post_dto(post: Dict[str, Any], viewer_id: Optional[str], authors: Optional[Dict[str, Dict[str, Any]]] = None):
    """The shape the community feed renders."""
    if authors is None:
        authors = _authors([post["author"]])
    author = authors.get(post["author"], {})
    likes = post.get("likes", [])
    return {
        "id": str(post["_id"]),
        "authorName": author.get("name") or post.get("authorName") or "Anonymous",
        "authorAvatar": author.get("avatar") or post.get("authorAvatar") or DEFAULT_AVATAR,
        "timestamp": serialize(post["createdAt"]),
        "content": post["content"],
        "tags": post.get("tags", []),
        "likes": len(likes),
        "comments": len(post.get("comments", [])),
        "liked": bool(viewer_id) and viewer_id in likes,
    }


def _community_or_404(community_id: str) -> Dict[str, Any]:
    community = db["community"].find_one({"_id": to_object_id(community_id)})
    if not community:
        raise HTTPException(status_code=404, detail="Community not found")
    return community


def _post_or_404(post_id: str) -> Dict[str, Any]:
    post = db["communitypost"].find_one({"_id": to_object_id(post_id)})
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


def _clean_tags(tags: List[str]) -> List[str]:
    return [t for t in (sanitize_input(t) for t in tags if isinstance(t, str)) if t]


@router.post("", status_code=201)
def create_community(req: CommunityRequest, current: Principal = Depends(get_current_user)):
    name = sanitize_input(req.name or "")
    if not name:
        raise HTTPException(status_code=400, detail="Community name is required")
    try:
        community = Community(
            name=name,
            description=sanitize_input(req.description),
            is_public=req.isPublic,
            tags=_clean_tags(req.tags),
            created_by=current.user_id,
            members=[current.user_id],
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={
            "message": "Validation error",
            "errors": [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()],
        })
    community_id = create_document("community", community)
    logger.info("Community %s created by %s", community_id, current.user_id)
    return {"message": "Community created", "community": serialize(_community_or_404(community_id))}


@router.get("")
def list_communities():
    communities = list(db["community"].find().sort("createdAt", -1))
    creators = _authors([c["createdBy"] for c in communities])
    out = []
    for c in communities:
        item = serialize(c)
        creator = creators.get(c["createdBy"])
        item["creator"] = {"id": c["createdBy"], "name": creator.get("name")} if creator else None
        item["memberCount"] = len(c.get("members", []))
        out.append(item)
    return {"message": "Communities loaded", "count": len(out), "communities": out}


@router.post("/{community_id}/join")
def join_community(community_id: str, current: Principal = Depends(get_current_user)):
    community = db["community"].find_one_and_update(
        {"_id": to_object_id(community_id)},
        {"$addToSet": {"members": current.user_id}, "$set": {"updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not community:
        raise HTTPException(status_code=404, detail="Community not found")
    return {"message": "Joined community", "community": serialize(community)}


@router.post("/{community_id}/leave")
def leave_community(community_id: str, current: Principal = Depends(get_current_user)):
    community = db["community"].find_one_and_update(
        {"_id": to_object_id(community_id)},
        {"$pull": {"members": current.user_id}, "$set": {"updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not community:
        raise HTTPException(status_code=404, detail="Community not found")
    return {"message": "Left community", "community": serialize(community)}


@router.post("/{community_id}/posts", status_code=201)
def create_post(community_id: str, req: PostRequest, current: Principal = Depends(get_current_user)):
    content = sanitize_input(req.content or "")
    if not content:
        raise HTTPException(status_code=400, detail="Post content is required")
    _community_or_404(community_id)

    author = db["user"].find_one({"_id": to_object_id(current.user_id)}) or {}
    try:
        post = CommunityPost(
            community_id=community_id,
            author=current.user_id,
            author_name=author.get("name"),
            author_avatar=author.get("avatar"),
            content=content,
            tags=_clean_tags(req.tags),
        )
    except ValidationError:
        raise HTTPException(status_code=400, detail="Post content must not exceed 5000 characters")
    post_id = create_document("communitypost", post)
    return {"message": "Post created", "post": post_dto(_post_or_404(post_id), current.user_id)}


@router.get("/{community_id}/posts")
def list_posts(community_id: str, viewer: Optional[Principal] = Depends(get_optional_user)):
    posts = list(db["communitypost"].find({"communityId": community_id}).sort([("createdAt", -1), ("_id", -1)]))
    authors = _authors([p["author"] for p in posts])
    viewer_id = viewer.user_id if viewer else None
    out = [post_dto(p, viewer_id, authors) for p in posts]
    return {"message": "Posts loaded", "count": len(out), "posts": out}


@router.post("/posts/{post_id}/like")
def toggle_like(post_id: str, current: Principal = Depends(get_current_user)):
    oid = to_object_id(post_id)
    # pull first; if nothing was pulled the caller had not liked it yet
    unliked = db["communitypost"].find_one_and_update(
        {"_id": oid, "likes": current.user_id},
        {"$pull": {"likes": current.user_id}},
        return_document=ReturnDocument.AFTER,
    )
    post = unliked or db["communitypost"].find_one_and_update(
        {"_id": oid},
        {"$addToSet": {"likes": current.user_id}},
        return_document=ReturnDocument.AFTER,
    )
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return {"message": "Post unliked" if unliked else "Post liked", "post": post_dto(post, current.user_id)}


@router.post("/posts/{post_id}/comments", status_code=201)
def add_comment(post_id: str, req: CommentRequest, current: Principal = Depends(get_current_user)):
    text = sanitize_input(req.text or "")
    if not text:
        raise HTTPException(status_code=400, detail="Comment text is required")
    author = db["user"].find_one({"_id": to_object_id(current.user_id)}) or {}
    try:
        comment = Comment(author=current.user_id, author_name=author.get("name"), text=text, created_at=utcnow())
    except ValidationError:
        raise HTTPException(status_code=400, detail="Comment must not exceed 1000 characters")

    post = db["communitypost"].find_one_and_update(
        {"_id": to_object_id(post_id)},
        {"$push": {"comments": comment.model_dump(by_alias=True)}, "$set": {"updatedAt": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return {"message": "Comment added", "post": post_dto(post, current.user_id)}
