from app import create_app
from config.loader import ConfigStore

app = create_app()

if __name__ == "__main__":
    cfg = ConfigStore.get()
    app.run(host=cfg.app.host, port=cfg.app.port, threaded=True)
