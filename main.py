import os
import sys
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

# Database helpers (MongoDB)
import database
from database import db, create_document, get_documents, now, oid, populate, to_str_id
from middleware import RateLimitMiddleware, SecurityHeadersMiddleware
from schemas import (
    CustomerIn,
    DocumentIn,
    MaterialIn,
    OrderIn,
    OrderStatusUpdate,
    ProductIn,
    ProjectIn,
    ProjectStatus,
    ProjectStatusUpdate,
)
from storage import upload_product_image

logger = logging.getLogger(__name__)

PORT = int(os.getenv("PORT", 3000))
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
ALLOWED_ORIGINS = [
    o.strip() for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:5173").split(",") if o.strip()
]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


# -----------------------------
# Utilities
# -----------------------------

@contextmanager
def store_errors(message: str):
    """Turn store failures inside the block into a 500 carrying ``message``."""
    try:
        yield
    except PyMongoError:
        logger.exception(message)
        raise HTTPException(status_code=500, detail=message)


def not_found(label: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{label} not found")


def find_or_404(collection: str, doc_id: str, label: str, error: str) -> Dict[str, Any]:
    _id = oid(doc_id)
    if not _id:
        raise not_found(label)
    with store_errors(error):
        d = db[collection].find_one({"_id": _id})
    if not d:
        raise not_found(label)
    return d


def update_or_404(collection: str, doc_id: str, update: Dict[str, Any], label: str, error: str) -> Dict[str, Any]:
    _id = oid(doc_id)
    if not _id:
        raise not_found(label)
    with store_errors(error):
        upd = db[collection].find_one_and_update(
            {"_id": _id}, update, return_document=ReturnDocument.AFTER
        )
    if not upd:
        raise not_found(label)
    return upd


def replacement(payload: DocumentIn) -> Dict[str, Any]:
    """Build an update that makes the stored fields match ``payload``.

    Optional fields left empty are removed from the document.
    """
    doc = payload.to_document()
    update: Dict[str, Any] = {"$set": {k: v for k, v in doc.items() if v is not None}}
    update["$set"]["updatedAt"] = now()
    unset = {k: "" for k, v in doc.items() if v is None}
    if unset:
        update["$unset"] = unset
    return update


def delete_or_404(collection: str, doc_id: str, label: str, error: str) -> Dict[str, str]:
    _id = oid(doc_id)
    if not _id:
        raise not_found(label)
    with store_errors(error):
        res = db[collection].delete_one({"_id": _id})
    if res.deleted_count == 0:
        raise not_found(label)
    return {"message": f"{label} deleted successfully"}


def populate_orders(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    docs = populate(docs, "customerId", "customer")
    return populate(docs, "items.productId", "product")


def populate_projects(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return populate(docs, "materials.materialId", "material")


# -----------------------------
# FastAPI App
# -----------------------------

def configure_middleware(application: FastAPI, environment: str) -> None:
    if environment == "production":
        # last added runs first: CORS and security headers also cover 429s
        application.add_middleware(RateLimitMiddleware)
        application.add_middleware(SecurityHeadersMiddleware)
        application.add_middleware(
            CORSMiddleware,
            allow_origins=ALLOWED_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    else:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )


app = FastAPI(title="Leatherworking Tracker API")
configure_middleware(app, ENVIRONMENT)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ())]
        if loc and loc[0] == "body":
            loc = loc[1:]
        if err.get("type") == "json_invalid":
            # loc holds a character offset into the raw body
            loc = []
        msg = err.get("msg", "Invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        errors.append({"field": ".".join(loc) or "body", "message": msg})
    return JSONResponse(status_code=400, content={"errors": errors})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"message": "Something went wrong!"})


@app.get("/health")
def health():
    return {"status": "ok"}


# -----------------------------
# Customers
# -----------------------------
@app.get("/api/customers")
def list_customers():
    with store_errors("Error fetching customers"):
        docs = get_documents("customer", sort=[("name", 1)])
    return [to_str_id(d) for d in docs]


@app.get("/api/customers/{customer_id}")
def get_customer(customer_id: str):
    return to_str_id(find_or_404("customer", customer_id, "Customer", "Error fetching customer"))


@app.post("/api/customers", status_code=201)
def create_customer(payload: CustomerIn):
    with store_errors("Error creating customer"):
        doc = create_document("customer", payload.to_document())
    return to_str_id(doc)


@app.put("/api/customers/{customer_id}")
def update_customer(customer_id: str, payload: CustomerIn):
    upd = update_or_404("customer", customer_id, replacement(payload), "Customer", "Error updating customer")
    return to_str_id(upd)


@app.delete("/api/customers/{customer_id}")
def delete_customer(customer_id: str):
    return delete_or_404("customer", customer_id, "Customer", "Error deleting customer")


# -----------------------------
# Products
# -----------------------------
@app.get("/api/products")
def list_products():
    with store_errors("Error fetching products"):
        docs = get_documents("product", sort=[("name", 1)])
    return [to_str_id(d) for d in docs]


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    return to_str_id(find_or_404("product", product_id, "Product", "Error fetching product"))


@app.post("/api/products", status_code=201)
def create_product(payload: ProductIn):
    with store_errors("Error creating product"):
        doc = create_document("product", {**payload.to_document(), "images": []})
    return to_str_id(doc)


@app.put("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductIn):
    upd = update_or_404("product", product_id, replacement(payload), "Product", "Error updating product")
    return to_str_id(upd)


@app.post("/api/products/{product_id}/images")
def add_product_image(product_id: str, image: Optional[UploadFile] = File(None)):
    if image is None:
        raise HTTPException(status_code=400, detail="No image file provided")
    product = find_or_404("product", product_id, "Product", "Error uploading image")

    try:
        key, url = upload_product_image(
            str(product["_id"]),
            image.filename or "image",
            image.file.read(),
            image.content_type or "application/octet-stream",
        )
    except (BotoCoreError, ClientError):
        logger.exception("Error uploading image for product %s", product_id)
        raise HTTPException(status_code=500, detail="Error uploading image")

    stamp = now()
    update = {
        "$push": {"images": {"key": key, "url": url, "uploadedAt": stamp}},
        "$set": {"updatedAt": stamp},
    }
    upd = update_or_404("product", product_id, update, "Product", "Error uploading image")
    return to_str_id(upd)


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str):
    return delete_or_404("product", product_id, "Product", "Error deleting product")


# -----------------------------
# Materials
# -----------------------------
@app.get("/api/materials")
def list_materials():
    with store_errors("Error fetching materials"):
        docs = get_documents("material", sort=[("name", 1)])
    return [to_str_id(d) for d in docs]


@app.get("/api/materials/{material_id}")
def get_material(material_id: str):
    return to_str_id(find_or_404("material", material_id, "Material", "Error fetching material"))


@app.post("/api/materials", status_code=201)
def create_material(payload: MaterialIn):
    with store_errors("Error creating material"):
        doc = create_document("material", payload.to_document())
    return to_str_id(doc)


@app.put("/api/materials/{material_id}")
def update_material(material_id: str, payload: MaterialIn):
    upd = update_or_404("material", material_id, replacement(payload), "Material", "Error updating material")
    return to_str_id(upd)


@app.delete("/api/materials/{material_id}")
def delete_material(material_id: str):
    return delete_or_404("material", material_id, "Material", "Error deleting material")


# -----------------------------
# Orders
# -----------------------------
@app.get("/api/orders")
def list_orders():
    with store_errors("Error fetching orders"):
        docs = populate_orders(get_documents("order", sort=[("createdAt", -1)]))
    return [to_str_id(d) for d in docs]


@app.get("/api/orders/{order_id}")
def get_order(order_id: str):
    o = find_or_404("order", order_id, "Order", "Error fetching order")
    with store_errors("Error fetching order"):
        o = populate_orders([o])[0]
    return to_str_id(o)


@app.post("/api/orders", status_code=201)
def create_order(payload: OrderIn):
    # customerId / productId are stored as given; they are not checked for existence
    with store_errors("Error creating order"):
        doc = create_document("order", payload.to_document())
    return to_str_id(doc)


@app.put("/api/orders/{order_id}")
def update_order(order_id: str, payload: OrderIn):
    upd = update_or_404("order", order_id, replacement(payload), "Order", "Error updating order")
    return to_str_id(upd)


@app.patch("/api/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusUpdate):
    update = {"$set": {"status": payload.status, "updatedAt": now()}}
    upd = update_or_404("order", order_id, update, "Order", "Error updating order status")
    return to_str_id(upd)


@app.delete("/api/orders/{order_id}")
def delete_order(order_id: str):
    return delete_or_404("order", order_id, "Order", "Error deleting order")


# -----------------------------
# Projects
# -----------------------------
@app.get("/api/projects")
def list_projects():
    with store_errors("Error fetching projects"):
        docs = populate_projects(get_documents("project", sort=[("createdAt", -1)]))
    return [to_str_id(d) for d in docs]


@app.get("/api/projects/{project_id}")
def get_project(project_id: str):
    p = find_or_404("project", project_id, "Project", "Error fetching project")
    with store_errors("Error fetching project"):
        p = populate_projects([p])[0]
    return to_str_id(p)


@app.post("/api/projects", status_code=201)
def create_project(payload: ProjectIn):
    with store_errors("Error creating project"):
        doc = create_document("project", payload.to_document())
    return to_str_id(doc)


@app.put("/api/projects/{project_id}")
def update_project(project_id: str, payload: ProjectIn):
    upd = update_or_404("project", project_id, replacement(payload), "Project", "Error updating project")
    with store_errors("Error updating project"):
        upd = populate_projects([upd])[0]
    return to_str_id(upd)


@app.patch("/api/projects/{project_id}/status")
def update_project_status(project_id: str, payload: ProjectStatusUpdate):
    stamp = now()
    fields: Dict[str, Any] = {"status": payload.status, "updatedAt": stamp}
    if payload.status == ProjectStatus.COMPLETED.value:
        fields["actualCompletionDate"] = stamp
    upd = update_or_404("project", project_id, {"$set": fields}, "Project", "Error updating project status")
    with store_errors("Error updating project status"):
        upd = populate_projects([upd])[0]
    return to_str_id(upd)


@app.delete("/api/projects/{project_id}")
def delete_project(project_id: str):
    return delete_or_404("project", project_id, "Project", "Error deleting project")


def run():
    import uvicorn

    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(
        "Starting with configuration: port=%s database=%s environment=%s",
        PORT, database.DATABASE_NAME, ENVIRONMENT,
    )
    try:
        database.ping()
    except PyMongoError:
        logger.exception("MongoDB connection error")
        sys.exit(1)
    logger.info("Connected to MongoDB")

    uvicorn.run(app, host="0.0.0.0", port=PORT)


if __name__ == "__main__":
    run()
