from glowmarkt_ingest.jobs.batch_load import run_batch

def main():
    raise SystemExit(run_batch())

if __name__ == "__main__":
    main()
