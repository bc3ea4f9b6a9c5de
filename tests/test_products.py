"""
Product and material endpoints, including image attachment
"""
from botocore.exceptions import ClientError

import main

MISSING_ID = "507f1f77bcf86cd799439011"


class TestMaterials:
    def test_create_and_get(self, client, material):
        res = client.get(f"/api/materials/{material['_id']}")
        assert res.status_code == 200
        body = res.json()
        assert body["name"] == "Veg Tan Shoulder"
        assert body["quantity"] == 12.5
        assert body["unit"] == "sq ft"

    def test_negative_values_rejected(self, client):
        res = client.post("/api/materials", json={
            "name": "Thread", "type": "Waxed", "quantity": -1, "unit": "m", "price": -2,
        })
        assert res.status_code == 400
        fields = [e["field"] for e in res.json()["errors"]]
        assert fields == ["quantity", "price"]

    def test_required_strings(self, client):
        res = client.post("/api/materials", json={"name": " ", "quantity": 1, "price": 1})
        assert res.status_code == 400
        fields = {e["field"] for e in res.json()["errors"]}
        assert {"name", "type", "unit"} <= fields

    def test_list_sorted_by_name(self, client):
        for name in ("Rivets", "Dye"):
            client.post("/api/materials", json={
                "name": name, "type": "Hardware", "quantity": 1, "unit": "pc", "price": 1,
            })
        assert [m["name"] for m in client.get("/api/materials").json()] == ["Dye", "Rivets"]

    def test_update_and_delete(self, client, material):
        res = client.put(f"/api/materials/{material['_id']}", json={
            "name": "Veg Tan Shoulder", "type": "Leather", "quantity": 3, "unit": "sq ft", "price": 10,
        })
        assert res.status_code == 200
        assert res.json()["quantity"] == 3
        assert "supplier" not in res.json()

        res = client.delete(f"/api/materials/{material['_id']}")
        assert res.json() == {"message": "Material deleted successfully"}

    def test_missing(self, client):
        assert client.get(f"/api/materials/{MISSING_ID}").json() == {"message": "Material not found"}
        assert client.delete("/api/materials/nope").status_code == 404

    def test_update_missing(self, client):
        payload = {"name": "Thread", "type": "Waxed", "quantity": 1, "unit": "m", "price": 1}
        res = client.put(f"/api/materials/{MISSING_ID}", json=payload)
        assert res.status_code == 404
        assert res.json() == {"message": "Material not found"}
        assert client.put("/api/materials/nope", json=payload).status_code == 404

    def test_non_finite_numbers_rejected(self, client):
        """Infinity and NaN never reach the store, so listing keeps working"""
        for token in (b"Infinity", b"NaN", b"-Infinity"):
            res = client.post(
                "/api/materials",
                content=b'{"name": "Thread", "type": "Waxed", "quantity": ' + token
                + b', "unit": "m", "price": 1}',
                headers={"Content-Type": "application/json"},
            )
            assert res.status_code == 400
            assert res.json()["errors"][0]["field"] == "quantity"

        res = client.get("/api/materials")
        assert res.status_code == 200
        assert res.json() == []


class TestProducts:
    def test_create(self, client, product, material):
        assert product["price"] == 85
        assert product["stock"] == 4
        assert product["images"] == []
        assert product["materials"][0]["materialId"] == material["_id"]

    def test_stock_must_be_non_negative_integer(self, client):
        res = client.post("/api/products", json={"name": "Belt", "price": 40, "stock": 1.5})
        assert res.status_code == 400
        res = client.post("/api/products", json={"name": "Belt", "price": 40, "stock": -1})
        assert res.status_code == 400
        assert res.json()["errors"][0]["field"] == "stock"

    def test_stock_beyond_int64_rejected(self, client):
        res = client.post("/api/products", json={"name": "Belt", "price": 40, "stock": 10**30})
        assert res.status_code == 400
        assert res.json()["errors"][0]["field"] == "stock"

    def test_item_quantity_beyond_int64_rejected(self, client, material):
        res = client.post("/api/products", json={
            "name": "Belt", "price": 40, "stock": 1,
            "materials": [{"materialId": material["_id"], "quantity": 2**63}],
        })
        assert res.status_code == 400
        assert res.json()["errors"][0]["field"] == "materials.0.quantity"

    def test_infinite_price_rejected(self, client):
        res = client.post(
            "/api/products",
            content=b'{"name": "Belt", "price": Infinity, "stock": 1}',
            headers={"Content-Type": "application/json"},
        )
        assert res.status_code == 400
        assert res.json()["errors"][0]["field"] == "price"

    def test_get_round_trips(self, client, product):
        res = client.get(f"/api/products/{product['_id']}")
        assert res.status_code == 200
        body = res.json()
        assert body["_id"] == product["_id"]
        assert body["name"] == "Bifold Wallet"
        assert body["stock"] == 4
        assert client.get("/api/products/xyz").json() == {"message": "Product not found"}

    def test_material_quantity_at_least_one(self, client, material):
        res = client.post("/api/products", json={
            "name": "Belt", "price": 40, "stock": 1,
            "materials": [{"materialId": material["_id"], "quantity": 0}],
        })
        assert res.status_code == 400
        assert res.json()["errors"][0]["field"] == "materials.0.quantity"

    def test_material_reference_must_be_object_id(self, client):
        res = client.post("/api/products", json={
            "name": "Belt", "price": 40, "stock": 1,
            "materials": [{"materialId": "abc", "quantity": 1}],
        })
        assert res.status_code == 400
        error = res.json()["errors"][0]
        assert error == {"field": "materials.0.materialId", "message": "Valid material ID is required"}

    def test_update_rejects_negative_price(self, client, product):
        res = client.put(f"/api/products/{product['_id']}", json={"name": "Wallet", "price": -5, "stock": 1})
        assert res.status_code == 400

    def test_update_keeps_images(self, client, product, mongo):
        mongo["product"].update_one(
            {"_id": main.oid(product["_id"])},
            {"$push": {"images": {"key": "k", "url": "u", "uploadedAt": main.now()}}},
        )
        res = client.put(f"/api/products/{product['_id']}", json={"name": "Wallet", "price": 90, "stock": 2})
        assert res.status_code == 200
        body = res.json()
        assert body["price"] == 90
        assert len(body["images"]) == 1

    def test_update_missing(self, client):
        res = client.put(f"/api/products/{MISSING_ID}", json={"name": "Wallet", "price": 1, "stock": 1})
        assert res.status_code == 404
        assert res.json() == {"message": "Product not found"}

    def test_delete(self, client, product):
        res = client.delete(f"/api/products/{product['_id']}")
        assert res.json() == {"message": "Product deleted successfully"}
        assert client.get("/api/products").json() == []


class TestProductImages:
    def test_upload_appends_image(self, client, product, monkeypatch):
        calls = []

        def fake_upload(product_id, filename, body, content_type):
            calls.append((product_id, filename, body, content_type))
            return f"products/{product_id}/1700000000000-{filename}", "https://example.com/signed"

        monkeypatch.setattr(main, "upload_product_image", fake_upload)
        res = client.post(
            f"/api/products/{product['_id']}/images",
            files={"image": ("wallet.png", b"\x89PNG", "image/png")},
        )

        assert res.status_code == 200
        images = res.json()["images"]
        assert len(images) == 1
        assert images[0]["key"] == f"products/{product['_id']}/1700000000000-wallet.png"
        assert images[0]["url"] == "https://example.com/signed"
        assert images[0]["uploadedAt"]
        assert calls == [(product["_id"], "wallet.png", b"\x89PNG", "image/png")]

    def test_missing_file(self, client, product):
        res = client.post(f"/api/products/{product['_id']}/images")
        assert res.status_code == 400
        assert res.json() == {"message": "No image file provided"}

    def test_unknown_product_never_reaches_storage(self, client, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError("storage must not be called")

        monkeypatch.setattr(main, "upload_product_image", fail)
        res = client.post(
            f"/api/products/{MISSING_ID}/images",
            files={"image": ("a.png", b"x", "image/png")},
        )
        assert res.status_code == 404
        assert res.json() == {"message": "Product not found"}

    def test_storage_failure(self, client, product, monkeypatch):
        def denied(*args, **kwargs):
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")

        monkeypatch.setattr(main, "upload_product_image", denied)
        res = client.post(
            f"/api/products/{product['_id']}/images",
            files={"image": ("a.png", b"x", "image/png")},
        )
        assert res.status_code == 500
        assert res.json() == {"message": "Error uploading image"}
        assert client.get(f"/api/products/{product['_id']}").json()["images"] == []
