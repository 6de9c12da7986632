from service_pipeline.cli import main

main()
