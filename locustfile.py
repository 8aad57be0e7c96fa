from locust import HttpUser, task, between
import random


class Shopper(HttpUser):
    wait_time = between(0.1, 0.5)

    def on_start(self):
        # Register and log in a customer for this simulated client
        uname = f"user_{random.randint(1, 1_000_000)}"
        self.headers = None
        self.order_ids = []
        self.client.post("/api/register", json={"username": uname, "password": "pw", "email": f"{uname}@load.test"})
        r = self.client.post("/api/login", json={"username": uname, "password": "pw"})
        if r.status_code == 200:
            self.headers = {"Authorization": f"Bearer {r.json()['token']}"}

    @task(3)
    def browse_products(self):
        self.client.get("/api/products", params={"page": random.randint(1, 3)})

    @task(2)
    def place_order(self):
        if not self.headers:
            return
        r = self.client.get("/api/products")
        products = r.json().get("products", []) if r.status_code == 200 else []
        if not products:
            return
        product = random.choice(products)
        r = self.client.post(
            "/api/orders",
            json={"productId": product["id"], "quantity": random.randint(1, 3)},
            headers=self.headers,
        )
        if r.status_code == 201:
            self.order_ids.append(r.json()["orderId"])

    @task(1)
    def cancel_order(self):
        if not self.headers or not self.order_ids:
            return
        order_id = self.order_ids.pop()
        self.client.delete(f"/api/orders/{order_id}", headers=self.headers, name="/api/orders/[id]")
